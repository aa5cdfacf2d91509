"""
Administration area: account, role and audit trail management.

Each controller is its own blueprint nested under the ``administration``
blueprint, so its endpoints read ``administration.<controller>.<action>``.
"""
