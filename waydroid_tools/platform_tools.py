import platform

CPUINFO = "/proc/cpuinfo"


def _read_cpuinfo(path=CPUINFO):
    try:
        with open(path) as f:
            return f.read()
    except OSError:
        return ""


def get_machine():
    return platform.machine()


def get_arch(machine=None, cpuinfo=CPUINFO):
    """Android ABI and word size for the host CPU."""
    machine = machine or get_machine()
    if machine == "x86_64":
        if "sse4_2" not in _read_cpuinfo(cpuinfo):
            return ("x86", 32)
        return ("x86_64", 64)
    if machine in ["armv7l", "armv8l"]:
        return ("arm", 32)
    if machine == "aarch64":
        return ("arm64", 64)
    if machine in ["i686", "x86"]:
        return ("x86", 32)
    raise ValueError("%s not supported" % machine)


def get_cpu_vendor(cpuinfo=CPUINFO):
    for line in _read_cpuinfo(cpuinfo).splitlines():
        if line.startswith("vendor_id"):
            return line.split(":", 1)[-1].strip()
    return ""


def recommended_translation_layer(machine=None, cpuinfo=CPUINFO):
    """ARM translation layer suited to this CPU, or None on ARM hosts."""
    machine = machine or get_machine()
    if machine not in ["x86_64", "i686", "x86"]:
        return None
    vendor = get_cpu_vendor(cpuinfo)
    if vendor == "AuthenticAMD":
        return "libndk"
    if vendor == "GenuineIntel":
        return "libhoudini"
    return None
