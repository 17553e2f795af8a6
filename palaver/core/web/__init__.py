"""HTTP routing used to bridge conversations into web requests"""

from .routing import Params, Route, RouteError, Router, dispatch, not_found

__all__ = ['Params', 'Route', 'RouteError', 'Router', 'dispatch', 'not_found']
