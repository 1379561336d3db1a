"""Auction engine core: configuration, host state, asset registry, auction protocol, storage"""
