from aiohttp import web

ctx_key = web.AppKey("ctx", dict)
