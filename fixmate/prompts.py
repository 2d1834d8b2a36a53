from __future__ import annotations

from typing import List, Tuple

OUT_OF_SCOPE_REPLY = (
    "I'm designed to help only with device and asset-related issues. "
    "Please reach out to the appropriate team for that."
)

SYSTEM_INSTRUCTION = (
    "You are FixMate AI, a professional L1 Technical Support Assistant specializing in quickly "
    "resolving hardware and asset-related issues such as laptop malfunctions, battery problems, "
    "driver errors, VPN issues, and peripheral device failures.\n\n"
    "Rules:\n"
    "- Provide the most effective, trending, and proven solutions first based on common industry practices.\n"
    "- Avoid asking unnecessary or too many clarifying questions; assume typical scenarios and offer practical fixes.\n"
    "- If you need minimal information to proceed, ask concise, direct questions only when absolutely necessary.\n"
    "- If asked about anything outside your domain (e.g., HR queries, personal questions), respond with: "
    f'"{OUT_OF_SCOPE_REPLY}"\n'
    "- Always be clear, concise, and provide step-by-step guidance.\n"
    "- Maintain a professional and helpful tone."
)

# keyword groups checked in order; first match wins
DEMO_REPLIES: List[Tuple[Tuple[str, ...], str]] = [
    (
        ("battery", "charge", "charging", "charger", "power"),
        "Let's get your battery charging again.\n\n"
        "1) Check the charger cable and adapter for damage; try another wall outlet.\n"
        "2) Unplug, hold the power button for 30 seconds, then reconnect the charger.\n"
        "3) Update the BIOS and chipset drivers from the manufacturer's support page.\n"
        "4) In Device Manager, uninstall 'Microsoft ACPI-Compliant Control Method Battery' and reboot.\n\n"
        "If the charging light still stays off, the adapter or battery likely needs replacement.",
    ),
    (
        ("vpn", "anyconnect", "globalprotect", "tunnel"),
        "Try these VPN fixes in order:\n\n"
        "1) Confirm your regular internet works without the VPN.\n"
        "2) Sign out of the VPN client, quit it fully, and reconnect.\n"
        "3) Restart the VPN service or reinstall the latest client version.\n"
        "4) Flush DNS: run 'ipconfig /flushdns' in an admin command prompt.\n\n"
        "Still failing? Share the exact error message shown by the client.",
    ),
    (
        ("driver", "drivers", "blue screen", "bsod", "device manager"),
        "Driver issues are usually fixed like this:\n\n"
        "1) Open Device Manager and look for devices with a yellow warning icon.\n"
        "2) Right-click the device > Update driver > Search automatically.\n"
        "3) If the problem started after an update, use Roll Back Driver.\n"
        "4) Install the vendor's driver package directly from their support site.\n\n"
        "Reboot after each change and check whether the issue persists.",
    ),
    (
        ("mouse", "keyboard", "monitor", "printer", "headset", "usb", "dock"),
        "For peripheral problems:\n\n"
        "1) Reconnect the device, preferably to a different USB port or directly (no hub).\n"
        "2) Test the device on another computer to rule out hardware failure.\n"
        "3) For docks and monitors, update the dock firmware and graphics driver.\n"
        "4) For wireless devices, replace the batteries and re-pair.\n\n"
        "Tell me the device model if it still isn't detected.",
    ),
    (
        ("slow", "freeze", "freezing", "hang", "overheat", "fan", "laptop"),
        "To speed up and stabilise your laptop:\n\n"
        "1) Restart it (a full restart, not sleep).\n"
        "2) Open Task Manager and close apps using high CPU or memory.\n"
        "3) Install pending OS updates and reboot.\n"
        "4) Keep vents clear and use a hard surface if it runs hot.\n\n"
        "If it still freezes, note when it happens and any error shown.",
    ),
]

DEMO_FALLBACK_REPLY = (
    "I can help with laptops, batteries, drivers, VPN and peripherals.\n"
    "Describe the device and what happens (including any error message) and I'll suggest the fastest fix."
)

HR_KEYWORDS = ("salary", "payroll", "annual leave", "holiday", "promotion", "my manager")


def demo_reply(prompt: str) -> str:
    low = (prompt or "").lower()
    if any(k in low for k in HR_KEYWORDS):
        return OUT_OF_SCOPE_REPLY
    for keywords, reply in DEMO_REPLIES:
        if any(k in low for k in keywords):
            return reply
    return DEMO_FALLBACK_REPLY
