# This module assembles the per-turn context packet

# +---------------------+      +---------------------+
# |      Store          |      |      Cache          |
# |---------------------|      |---------------------|
# | User record         |      | Coach specs         |
# | Coach record        |      | Active plans        |
# | Session summaries   |      +---------------------+
# +---------------------+                |
#          \                             /
#           \                           /
#            v                         v
# +------------------------------------------+
# |              ContextPacket               |   (Built per turn, never persisted)
# |------------------------------------------|
# | User snapshot (values, goals)            |
# | Coach spec (style, policies, tools)      |
# | Active plans       (route: active_plans) |
# | Last session summary                     |
# | Ranked commitments (route: commitments)  |
# +------------------------------------------+
#          |
#          v
#   [Coach generator prompt]
