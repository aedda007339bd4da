"""
Core gateway building blocks: constants, handshake context, error taxonomy.
"""
