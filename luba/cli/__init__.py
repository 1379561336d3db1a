"""LUBA command line interface"""
