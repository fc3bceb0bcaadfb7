"""
studyloop: spaced-repetition study-session engine.

Decides which items a learner should review, which recent misses need
re-exposure, how many new items to introduce, and turns each graded
response into an updated review schedule.
"""

__version__ = "1.0.0"
