"""
Webull API endpoint paths.

Paths are relative to ``WebullConfig.base_url``.
"""

# Authentication
LOGIN = "/api/passport/login/v5/account"
VERIFY_MFA = "/api/passport/verificationCode/verify"
REFRESH_TOKEN = "/api/passport/refreshToken"
LOGOUT = "/api/passport/logout"
