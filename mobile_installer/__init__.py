"""Mobile NixOS installer: configuration renderer.

Turns the answers collected by the installer GUI into the NixOS configuration
consumed by ``nixos-install``.

Core design goals:
- Immutable snapshot of the answers, passed explicitly
- Derived identifiers (UUIDs, labels, LUKS names) chosen once per run
- Secrets only ever travel over stdin
- Both documents written, or neither
- Centralized logging
"""

__all__ = []
