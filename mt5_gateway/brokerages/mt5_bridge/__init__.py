"""
MT5 Bridge - HTTP Gateway Components
====================================

Talks to an MT5 HTTP bridge (mtapi-style REST service in front of the
MT5 terminal).

Architecture:
    [Trading app]  --HTTP-->  [MT5 bridge]  -->  [MT5 terminal / broker]
     MT5Brokerage

Components:
- protocol.py: Response Normalizer, turns any bridge body into Success/Failure
- session.py: Session value, session states, token stores
- client.py: Session Manager, owns the token and the httpx client
- positions.py: raw position record normalisation
- executor.py: Order Executor (OrderSend)
- closer.py: Position Closer with the volume-format probe (OrderClose)
"""
