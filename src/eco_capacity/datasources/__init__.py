"""External data source integrations.

Each subdirectory is one data source with a consistent structure:

    datasources/{name}/
    ├── __init__.py       # Public API re-exports
    ├── client.py         # API URLs, constants, code tables
    └── {feature}.py      # Fetch functions / provider classes

Adding a weather provider
-------------------------
1. Implement the ``WeatherProvider`` protocol from ``datasources/weather/current.py``::

       class MyProvider:
           def fetch_current(self, site_id, lat, lon, name) -> WeatherReading:
               resp = self.session.get(API_URL, params={...})
               resp.raise_for_status()
               return parse(resp.json())

   Raise ``ProviderError`` for any failure; the aggregator treats it as a
   signal to fall back, never as a hard error.

2. Derive ``alert_level`` with ``weather.alerts.derive_alert``.

3. Pass an instance to ``services.container.build_services(provider=...)``.
"""
