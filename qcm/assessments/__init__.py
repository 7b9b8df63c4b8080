"""
Assessment attempt engine: quiz models, randomization, time limits, answer
storage, scoring, attempt lifecycle and cross-attempt bookkeeping.
"""
