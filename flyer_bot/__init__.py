"""
Flyer bot: WhatsApp supermarket flyers → price records in Supabase.
"""

__version__ = "0.1.0"
