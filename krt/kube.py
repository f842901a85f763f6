import re
from decimal import Decimal, InvalidOperation

from kubernetes.utils import parse_quantity

memory_quantity_re = re.compile(r'^([0-9.]+)([a-zA-Z]+)?$')

BINARY_UNITS = {
    'KI': 1024,
    'MI': 1024 ** 2,
    'GI': 1024 ** 3,
    'TI': 1024 ** 4,
    'PI': 1024 ** 5,
    'EI': 1024 ** 6,
}

DECIMAL_UNITS = {
    'K': 1000,
    'M': 1000 ** 2,
    'G': 1000 ** 3,
    'T': 1000 ** 4,
    'P': 1000 ** 5,
    'E': 1000 ** 6,
    # raw byte counts as reported by the stats summary tier
    'B': 1,
}


def cpu_to_millicores(q, default=0):
    """
    Converts a CPU quantity ("250000000n", "1500u", "500m", "2") to millicores.

    :param q: str or None
    :param default: returned for a missing or unparsable quantity
    :return: int >= 0 or default
    """
    if q is None:
        return default
    q = str(q).strip()
    if not q:
        return default
    try:
        cores = parse_quantity(q)
    except (ValueError, InvalidOperation):
        return default
    if not cores.is_finite():
        return default
    return max(0, round(cores * 1000))


def memory_to_bytes(q, default=0):
    """
    Converts a memory quantity to bytes. Binary suffixes (Ki..Ei) are powers of
    1024, decimal suffixes (K..E) are powers of 1000, no suffix means bytes.
    """
    if q is None:
        return default
    match = memory_quantity_re.match(str(q).strip())
    if not match:
        return default

    try:
        number = Decimal(match.group(1))
    except InvalidOperation:
        return default

    unit = (match.group(2) or '').upper()
    if not unit:
        return round(number)
    if unit in BINARY_UNITS:
        return round(number * BINARY_UNITS[unit])
    if unit in DECIMAL_UNITS:
        return round(number * DECIMAL_UNITS[unit])
    return default


def get_container_resources(container):
    """
    Extracts requests and limits from a container spec. Unset values stay None,
    so "no limit" is distinguishable from a limit of zero.
    """
    data = {
        'cpu_request_millicores': None,
        'cpu_limit_millicores': None,
        'memory_request_bytes': None,
        'memory_limit_bytes': None,
    }
    if container.resources:
        requests = container.resources.requests or {}
        limits = container.resources.limits or {}
        data['cpu_request_millicores'] = cpu_to_millicores(requests.get('cpu'), default=None)
        data['cpu_limit_millicores'] = cpu_to_millicores(limits.get('cpu'), default=None)
        data['memory_request_bytes'] = memory_to_bytes(requests.get('memory'), default=None)
        data['memory_limit_bytes'] = memory_to_bytes(limits.get('memory'), default=None)
    return data


def usage_percent(usage, limit):
    if usage is None or not limit:
        return None
    return usage / limit * 100
