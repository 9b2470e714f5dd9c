from conduit.http.turns import create_turn_router

__all__ = ["create_turn_router"]
