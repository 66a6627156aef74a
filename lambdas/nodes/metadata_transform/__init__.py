# Metadata Transform Node
# Pipeline node turning descriptive metadata (METS/MODS, LIDO, DC ...) into index fields
