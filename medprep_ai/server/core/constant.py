"""Application-wide constants."""

PROJECT_NAME = "MedPrep AI"
API_V1_STR = "/api"
VERSION = "1.0.0"

ADMIN_ROLES = ("admin", "superadmin")
