"""Business logic: tokens, TOTP, encryption, sessions, two-factor and the backend proxy."""
