# API v1 Package
from condohub.api.v1 import integration, jobs, financial, maintenance, unit_payments, notifications

__all__ = [
    'integration',
    'jobs',
    'financial',
    'maintenance',
    'unit_payments',
    'notifications',
]
