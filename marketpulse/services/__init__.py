"""
Business logic layer.
Services orchestrate data access, validation, and the analytics engine.
"""

# Service modules:
# - analytics_service.py: period views, insights and export data
# - import_service.py: CSV validation and import
# - transaction_service.py: manual entry and edits
# - auth_service.py: accounts and login
# - exporters.py: CSV, Excel, PDF and WhatsApp renderers
