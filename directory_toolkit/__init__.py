"""
Directory Admin Toolkit
=======================
Administration routines for on-premises Active Directory and Azure / Microsoft 365:
mailbox reconciliation, application permission audits, membership and
direct-report copying, and filesystem ACL snapshots.

Copy routines run in DRY-RUN mode unless explicitly asked to apply changes.
"""

__version__ = "1.0.0"
