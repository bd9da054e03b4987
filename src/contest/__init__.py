"""
Design contest service.

This service handles:
1. Accepting one design submission per user during the submission window
2. Assigning peer submissions to reviewers once submissions close
3. Collecting per-criterion votes during the voting window
4. Aggregating votes into the leaderboard once voting closes
"""
