"""auth/ -- Forward-auth decision engine for Portcullis.

Layer rule: auth/ imports only stdlib, third-party libraries and
core.config. core/ never imports from auth/.
"""
