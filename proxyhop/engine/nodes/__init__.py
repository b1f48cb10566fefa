from proxyhop.engine.nodes.https_over_proxy import HttpsOverProxyNode

__all__ = ["HttpsOverProxyNode"]
