"""Request/response file transfer (filexfer)

Layered the same way on both ends of the wire:
- frame codecs (binary metadata header, text OK/ERROR header) in ``packet``
- transports that hide short reads and message boundaries in ``net``
- the chunked copy loops with exact byte accounting in ``engine``
- client roles in ``sender``, per-connection server roles in ``receiver``
- a thread-per-connection dispatcher in ``server``
"""

__all__ = []
