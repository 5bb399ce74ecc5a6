"""
visual_objects: Distance-bearing descriptors for similarity search.

Every object type knows its distance to a compatible object and reads and
writes itself in a line-oriented text format and a compact binary format.

Modules:
    base          LocalObject supertype, text record reader
    binary        Binary encoding and the shared type registry
    keys          Object keys (locator, image dimensions)
    metrics       L1, L2, cosine and Jaccard metrics
    vectors       Primitive vectors parameterized by element type and metric
    features      Feature points (quantized or descriptor-bearing)
    feature_sets  Greedy, similarity-count and alignment feature sets
    alignment     Needleman-Wunsch and Smith-Waterman scoring
    meta          Composite descriptors with weighted-sum aggregation
    descriptors   MPEG-7 color and shape descriptors
    face          Face descriptor backed by an external similarity oracle
    extraction    ORB feature-set extraction from images
    errors        Exception types
"""

# Import every module that registers serializable types
from . import keys, vectors, features, feature_sets, meta, descriptors, face  # noqa: F401

__version__ = "1.0.0"
