"""
Jira Sync Job Package

Structure:
- jira_client.py: JiraAPIClient for REST API v3 / Agile API interactions
- jira_processor.py: JiraDataProcessor for mapping payloads to mirror rows
- jira_job.py: JiraSyncJob for the project/issue/sprint sync phases
"""

from .jira_client import JiraAPIClient
from .jira_processor import JiraDataProcessor
from .jira_job import JiraSyncJob
