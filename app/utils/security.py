from fastapi import Request


def get_client_ip(request: Request) -> str:
    """
    Extracts the client's IP address from the request, used as the
    rate-limit key. Assumes a standard proxy setup where the client IP is the
    first 'x-forwarded-for' entry, or is given in 'x-real-ip'.
    """
    x_forwarded_for = request.headers.get("x-forwarded-for")
    if x_forwarded_for:
        # The first IP is the client's IP
        first = x_forwarded_for.split(',')[0].strip()
        if first:
            return first

    x_real_ip = request.headers.get("x-real-ip")
    if x_real_ip:
        return x_real_ip.strip()

    # Fallback to direct client host
    return request.client.host if request.client else "unknown"
