"""Shop analytics dashboard: KPI cards and revenue charts over Supabase order data."""

__version__ = "0.1.0"
