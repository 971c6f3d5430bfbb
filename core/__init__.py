"""core/ -- Configuration, errors, database engines, and the rate limiter.

Layer rule: core/ is the kernel. It imports no other SocialGate package.
"""
