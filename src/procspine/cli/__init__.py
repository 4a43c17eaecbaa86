"""procspine command-line interface (``procspine run | which | remote``)."""
