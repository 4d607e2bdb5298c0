from relay_hub.api.routes import register_relay_routes

__all__ = ["register_relay_routes"]
