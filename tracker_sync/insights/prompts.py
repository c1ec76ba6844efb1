"""
Prompt templates for insight generation.

Each builder returns (system_prompt, user_prompt). The expected JSON keys are
the ones validated in response_parser.
"""

from typing import Dict, List, Tuple

from tracker_sync.models.unified_models import MirroredIssue, MirroredSprint

JSON_INSTRUCTION = "Respond with a single ```json fenced block and nothing else."


def _fmt(value) -> str:
    return "n/a" if value is None or value == "" else str(value)


def sla_risk_prompt(issue: MirroredIssue) -> Tuple[str, str]:
    system = f"You are an expert project manager. {JSON_INSTRUCTION}"
    user = f"""Analyze this issue for SLA breach risk:

Issue: {issue.key} - {_fmt(issue.summary)}
Type: {_fmt(issue.issue_type)}
Priority: {_fmt(issue.priority)}
Status: {_fmt(issue.status)}
Assignee: {_fmt(issue.assignee_name)}
Created: {_fmt(issue.created_date)}
Story Points: {_fmt(issue.story_points)}
Remaining estimate (seconds): {_fmt(issue.remaining_estimate)}

Provide JSON with: risk_score (0-1), risk_factors (array of strings), recommendations (array), estimated_completion_days (number)"""
    return system, user


def sprint_prediction_prompt(sprint: MirroredSprint, total_points: float, completed_points: float) -> Tuple[str, str]:
    progress = (completed_points / total_points * 100) if total_points > 0 else 0
    system = f"You are an expert Scrum Master. {JSON_INSTRUCTION}"
    user = f"""Analyze sprint completion prediction:

Sprint: {sprint.name}
Start: {_fmt(sprint.start_date)}
End: {_fmt(sprint.end_date)}
Total Story Points: {total_points:g}
Completed: {completed_points:g}
Remaining: {total_points - completed_points:g}
Progress: {progress:.1f}%

Provide JSON with: completion_probability (0-1), risk_factors (array of strings), recommendations (array), velocity_insights"""
    return system, user


def team_performance_prompt(project_keys: List[str], stats: Dict[str, Dict]) -> Tuple[str, str]:
    members = []
    for name, member in stats.items():
        rate = member['completed_issues'] / member['total_issues'] * 100 if member['total_issues'] else 0
        members.append(
            f"Team Member: {name}\n"
            f"- Total Issues: {member['total_issues']}\n"
            f"- Completed Issues: {member['completed_issues']}\n"
            f"- Story Points: {member['story_points']:g}\n"
            f"- Completion Rate: {rate:.1f}%"
        )

    system = f"You are an expert engineering manager. {JSON_INSTRUCTION}"
    user = f"""Analyze team performance for projects {', '.join(project_keys)}:

{chr(10).join(members)}

Provide JSON with keys: top_performers (array), needs_support (array), workload_recommendations (array), team_health_score (0-1)"""
    return system, user


def sentiment_prompt(issue: MirroredIssue) -> Tuple[str, str]:
    system = f"You are an expert in communication analysis for software teams. {JSON_INSTRUCTION}"
    user = f"""Analyze the sentiment of this issue description:

Issue: {issue.key} - {_fmt(issue.summary)}
Description:
{issue.description}

Provide JSON with: sentiment_score (-1 to 1), themes (array of strings), urgency_level (low|medium|high|critical), emotional_tone"""
    return system, user


def cost_analysis_prompt(project_keys: List[str], summary: Dict) -> Tuple[str, str]:
    expensive = "\n".join(
        f"- {item['key']}: {item['cost']:.2f} ({item['story_points']:g} SP)"
        for item in summary['top_issues']
    )
    system = f"You are an expert financial analyst specializing in software project economics. {JSON_INSTRUCTION}"
    user = f"""Analyze project cost data:

Project Keys: {', '.join(project_keys)}
Total Issues: {summary['total_issues']}
Completed Issues: {summary['completed_issues']}
Hours per story point: {summary['hours_per_point']:g}
Hourly rate: {summary['hourly_rate']:.2f}
Total Estimated Cost: {summary['total_cost']:.2f}
Completed Work Cost: {summary['completed_cost']:.2f}

Top 5 most expensive issues:
{expensive or '- none'}

Provide JSON with keys: cost_efficiency_score (0-1), budget_recommendations (array), cost_effective_issues (array), optimization_areas (array), roi_insights"""
    return system, user


def priority_rebalancing_prompt(issues: List[MirroredIssue]) -> Tuple[str, str]:
    listed = "\n".join(
        f"{issue.key}: {_fmt(issue.summary)}\n"
        f"- Current Priority: {_fmt(issue.priority)}\n"
        f"- Status: {_fmt(issue.status)}\n"
        f"- Story Points: {_fmt(issue.story_points)}\n"
        f"- Created: {_fmt(issue.created_date)}\n"
        f"- Updated: {_fmt(issue.updated_date)}\n"
        f"- Assignee: {_fmt(issue.assignee_name)}"
        for issue in issues
    )
    system = f"You are an expert product manager analyzing issue priorities. {JSON_INSTRUCTION}"
    user = f"""Analyze these open issues for priority rebalancing:

{listed}

Provide JSON with keys: increase_priority (array), decrease_priority (array), reasoning, priority_health_score (0-1)"""
    return system, user


def productivity_economics_prompt(project_keys: List[str], stats: Dict[str, Dict]) -> Tuple[str, str]:
    members = []
    for name, member in stats.items():
        rate = member['completed_issues'] / member['total_issues'] * 100 if member['total_issues'] else 0
        per_point = member['estimated_cost'] / member['story_points'] if member['story_points'] else 0
        members.append(
            f"Team Member: {name}\n"
            f"- Total Issues: {member['total_issues']}\n"
            f"- Completed Issues: {member['completed_issues']}\n"
            f"- Story Points: {member['story_points']:g}\n"
            f"- Estimated Cost: {member['estimated_cost']:.2f}\n"
            f"- Completion Rate: {rate:.1f}%\n"
            f"- Cost per Story Point: {per_point:.2f}"
        )

    system = f"You are an expert in productivity economics and team optimization. {JSON_INSTRUCTION}"
    user = f"""Analyze team productivity economics for projects {', '.join(project_keys)}:

{chr(10).join(members)}

Provide JSON with keys: cost_effective_members (array), productivity_recommendations (array), resource_allocation, value_insights, team_productivity_score (0-1)"""
    return system, user


def budget_alerts_prompt(project_keys: List[str], budget: Dict) -> Tuple[str, str]:
    burn = (
        f"{budget['spend_rate'] / budget['completion_rate']:.2f}"
        if budget['completion_rate'] > 0 else "n/a"
    )
    system = f"You are an expert financial controller specializing in project budget management. {JSON_INSTRUCTION}"
    user = f"""Analyze budget status and generate alerts:

Project Keys: {', '.join(project_keys)}
Total Projected Cost: {budget['projected_total_cost']:.2f}
Current Spend: {budget['current_spend']:.2f}
Budget Used: {budget['spend_rate'] * 100:.1f}%
Work Completed: {budget['completion_rate'] * 100:.1f}%
Burn Rate vs Completion: {burn}

Provide JSON with keys: critical_warnings (array), spending_trends, optimization_suggestions (array), reallocation_recommendations (array), financial_risk_score (0-1)"""
    return system, user
