"""Closed request/response variant sets of every protocol layer."""

from canhook.rpc.envelope import ProtocolSpec


PROVIDER_MANAGER = ProtocolSpec("ProviderManager", {
    "providers": (),
    "provider": ("address", "msg"),
    "delete": ("address",),
})

PROVIDER = ProtocolSpec("DeviceProvider", {
    "connect": (),
    "disconnect": (),
    "info": (),
    "device_manager_call": ("req",),
})

DEVICE_MANAGER = ProtocolSpec("DeviceManager", {
    "devices": (),
    "call": ("domain", "device_id", "data"),
})

GENERIC_DEVICE = ProtocolSpec("GenericDevice", {
    "blink": (),
    "set_id": ("id",),
    "set_name": ("name",),
    "commit_to_eeprom": (),
})

FIRMWARE_UPGRADE = ProtocolSpec("FirmwareUpgrade", {
    "start_field_upgrade": (),
    "progress": (),
    "do_field_upgrade": ("data",),
})

LASERCAN = ProtocolSpec("LaserCan", {
    "status": (),
    "set_range": ("mode",),
    "set_roi": ("roi",),
    "set_timing_budget": ("budget",),
    "generic": ("msg",),
    "firmware": ("msg",),
})

MITOCANDRIA = ProtocolSpec("Mitocandria", {
    "status": (),
    "set_switchable_channel": ("channel",),
    "set_adjustable_channel": ("channel",),
    "generic": ("msg",),
    "firmware": ("msg",),
})

OLD_VERSION_DEVICE = ProtocolSpec("OldVersionDevice", {
    "get_error": (),
    "get_firmware_url": (),
    "generic": ("msg",),
    "firmware": ("msg",),
})

DFU_DEVICE = ProtocolSpec("DfuDevice", {
    "firmware": ("msg",),
})

CAN_BRIDGE = ProtocolSpec("CanBridge", {
    "set_log_enabled": ("enabled",),
    "clear": (),
    "read_after": ("seq",),
    "set_filters": ("filters",),
    "send_raw": ("id", "data"),
})
