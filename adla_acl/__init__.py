"""
ADLA ACL Guard Package

This package provides tools for revoking a user's or group's Access Control
Entries (ACEs) from the Data Lake Store account that backs an Azure Data Lake
Analytics account, using tokens exported from the Azure CLI.

Modules:
- acl_remover: ACE removal (fast job-service paths, full recursive replication)
- azure_api: Azure Resource Manager and WebHDFS REST calls
- session: Session artifact bootstrap and loading
- jobs: Bounded worker pool and background job handles
- config_utils: Shared configuration utilities
"""

__version__ = "1.0.0"
__author__ = "ADLA ACL Project"
