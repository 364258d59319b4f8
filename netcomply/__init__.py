"""netcomply: network device configuration compliance checks."""

__version__ = "0.1.0"
