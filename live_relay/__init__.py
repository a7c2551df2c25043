"""
live_relay
~~~~~~~~~~
直播信令中继服务。
"""
