"""Application services — row/graph mapping and the weighted search engine.

Import from the submodules: the relational reader depends on the graph mapper,
and the search engine on the relational reader.
"""
