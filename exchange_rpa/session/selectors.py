# File: session/selectors.py
from __future__ import annotations

from dataclasses import dataclass

LOGIN_USERNAME = 'input[name="Username"], input#Username'
LOGIN_PASSWORD = 'input[type="password"], input[name="Password"], input#Password'
LOGIN_SUBMIT = 'input[type="submit"], button[type="submit"]'

# Any one of these being visible means the portal shell rendered.
LOGGED_IN_INDICATORS = (
    ".dashboard",
    ".main-nav",
    "text=/Welcome/i",
    '[data-testid="user-menu"]',
)

MFA_INDICATORS = (
    'input[name="code"]',
    'input[name="Code"]',
    'input[name="mfa"]',
    'input[name="verification"]',
    'input[type="text"][placeholder*="code" i]',
    "text=/verification code/i",
    "text=/two-factor/i",
    "text=/enter code/i",
    "text=/security code/i",
)
MFA_URL_FRAGMENTS = ("/mfa/", "/2fa/", "/verify")

MFA_CODE_INPUTS = (
    'input[name="Code"]',
    'input[name="code"]',
    'input[type="text"]',
    'input[placeholder*="code" i]',
    'input[placeholder*="verification" i]',
)
MFA_SUBMIT_BUTTONS = (
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Verify")',
    'button:has-text("Submit")',
    'button:has-text("Continue")',
)

LANDING_URL_FRAGMENTS = ("/Common/Home_ns.aspx", "/Home")
# URL fragments that mean we are still on the sign-in side of the portal
AUTH_URL_MARKERS = ("/mfa/", "login", "signin")

LOGGED_OUT_URL_FRAGMENTS = ("/login", "/signin", "/auth", "session-expired", "logged-out")
LOGGED_OUT_ELEMENTS = 'button:has-text("Login"), button:has-text("Sign In"), input[type="password"]'

ERROR_STATE_SELECTORS = (
    ".error-message",
    ".alert-danger",
    '[role="alert"]',
    ".validation-summary-errors",
)


@dataclass(frozen=True)
class LoginSelectors:
    username: str = LOGIN_USERNAME
    password: str = LOGIN_PASSWORD
    submit: str = LOGIN_SUBMIT
    logged_in: tuple[str, ...] = LOGGED_IN_INDICATORS
    mfa_indicators: tuple[str, ...] = MFA_INDICATORS
    mfa_url_fragments: tuple[str, ...] = MFA_URL_FRAGMENTS
    mfa_code_inputs: tuple[str, ...] = MFA_CODE_INPUTS
    mfa_submit: tuple[str, ...] = MFA_SUBMIT_BUTTONS
    landing_url_fragments: tuple[str, ...] = LANDING_URL_FRAGMENTS
    auth_url_markers: tuple[str, ...] = AUTH_URL_MARKERS
    logged_out_url_fragments: tuple[str, ...] = LOGGED_OUT_URL_FRAGMENTS
    logged_out_elements: str = LOGGED_OUT_ELEMENTS
