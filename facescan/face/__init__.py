"""Face scanning building blocks (extractor/gallery/matcher).

The extractor is the only part that touches the model runtime; gallery and
matcher operate on plain numpy embeddings and can be used without it.
"""
