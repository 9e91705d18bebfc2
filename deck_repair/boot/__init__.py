"""Boot configuration of imaged OS slots."""

from .finalize import (
    ChrootRunner,
    SteamosChrootRunner,
    finalize_boot,
    finalize_slot,
    install_bootloader,
    slot_commands,
)

__all__ = [
    "ChrootRunner",
    "SteamosChrootRunner",
    "finalize_boot",
    "finalize_slot",
    "install_bootloader",
    "slot_commands",
]
