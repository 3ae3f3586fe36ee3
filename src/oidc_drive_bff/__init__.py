# src/oidc_drive_bff/__init__.py
__version__ = "0.1.0"
