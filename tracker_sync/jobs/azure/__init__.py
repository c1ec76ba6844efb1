"""
Azure DevOps Sync Job Package

Structure:
- azure_client.py: AzureDevOpsClient for core/WIQL/work item API interactions
- azure_processor.py: AzureDataProcessor for mapping payloads to mirror rows
- azure_job.py: AzureSyncJob for the project/work item/iteration sync phases
"""

from .azure_client import AzureDevOpsClient
from .azure_processor import AzureDataProcessor
from .azure_job import AzureSyncJob
