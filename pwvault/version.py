"""pwvault Meta information.
   pwvault keeps per-site, per-user credentials encrypted under a
   single master password.
"""
__title__ = 'pwvault'
__description__ = (
   'Personal credential vault with master-password key derivation, '
   'AEAD-encrypted fields and timed password reveal.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
