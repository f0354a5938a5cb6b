"""Core computational modules for iterclust.

This package contains the main analysis engines:
- clustering: expression data model, DE separability, split and merge engines
- consensus: bootstrap co-clustering, consensus clustering and refinement
"""
