"""
HTTP API.

`trueport.api.app` builds the FastAPI application; `trueport.api.deps`
holds the dependencies routers use to reach app state.
"""
