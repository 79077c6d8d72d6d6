"""
HTTP clients for the TradeHub API and the EmailJS notification sink.
"""
