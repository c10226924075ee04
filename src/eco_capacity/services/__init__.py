"""
Shared infrastructure.

- http.py       - requests session with retry/backoff and default timeout
- container.py  - builds every long-lived service once and wires them together
"""
