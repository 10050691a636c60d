"""
Firebase Authentication for the SiNaK Backend.

ALL PROTECTED ENDPOINTS MUST depend on get_authenticated_user() (or
verify_token()) before any other logic. The verified uid is the only source
of truth for which Firestore documents a request may touch.
"""
