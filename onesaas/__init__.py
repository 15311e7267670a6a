"""OneSaaS: authentication, two-factor and plan-gated algorithm access."""

__version__ = "1.0.0"
