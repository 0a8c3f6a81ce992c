"""Authentication module (username/password + JWT bearer tokens).

Services:
    - PasswordHasher: PBKDF2 password hashing.
    - TokenService: issue/verify bearer tokens carrying a user id.
    - AuthService: signup and login against the store.
"""
