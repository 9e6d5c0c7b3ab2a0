# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Burrow - end-to-end encrypted group messaging over Nostr relays.

Burrow implements the Marmot profile of MLS group messaging on top of the
Nostr relay network:

  Identity (secp256k1 Nostr keypair)
    → KeyPackages (kind 443, published so others can invite us)
    → Groups (MLS state + Marmot Group Data extension 0xF2EE)
    → Group messages (kind 445, MLS ciphertext wrapped in NIP-44)
    → Welcomes (kind 444 rumors, delivered inside NIP-59 gift wraps)

The relay only ever sees ephemeral signers and the opaque Nostr group id.

CLI entry point: ``burrow``
"""

__version__ = "0.3.0"
