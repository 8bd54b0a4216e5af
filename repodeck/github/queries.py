"""GraphQL documents used by the repository transport."""

from __future__ import annotations

_RATE_LIMIT = "rateLimit { limit remaining resetAt }"

_BASE_FIELDS = """
id
name
nameWithOwner
description
visibility
isPrivate
isFork
isArchived
stargazerCount
forkCount
viewerHasStarred
owner { __typename login }
primaryLanguage { name color }
updatedAt
pushedAt
diskUsage
"""

_COMMIT_COUNT = "target { ... on Commit { history(first: 0) { totalCount } } }"

_FORK_TRACKING_FIELDS = f"""
parent {{ nameWithOwner defaultBranchRef {{ name {_COMMIT_COUNT} }} }}
defaultBranchRef {{ name {_COMMIT_COUNT} }}
"""

_PLAIN_FORK_FIELDS = """
parent { nameWithOwner }
defaultBranchRef { name }
"""

_CONNECTION_TAIL = """
totalCount
pageInfo { endCursor hasNextPage }
nodes { %(fields)s }
"""


def repository_fields(*, fork_tracking: bool) -> str:
    """Return the repository selection set.

    Fork tracking adds commit-count snapshots for the repository's default
    branch and its parent's, which is what "commits behind" is computed from.
    """
    fork_fields = _FORK_TRACKING_FIELDS if fork_tracking else _PLAIN_FORK_FIELDS
    return _BASE_FIELDS + fork_fields


def viewer_repositories_query(*, fork_tracking: bool) -> str:
    """Return the personal repositories query."""
    tail = _CONNECTION_TAIL % {"fields": repository_fields(fork_tracking=fork_tracking)}
    return f"""
query ViewerRepos(
  $first: Int!
  $after: String
  $sortField: RepositoryOrderField!
  $sortDirection: OrderDirection!
  $affiliations: [RepositoryAffiliation!]!
  $privacy: RepositoryPrivacy
) {{
  {_RATE_LIMIT}
  viewer {{
    repositories(
      ownerAffiliations: $affiliations
      first: $first
      after: $after
      orderBy: {{field: $sortField, direction: $sortDirection}}
      privacy: $privacy
    ) {{ {tail} }}
  }}
}}
"""


def organization_repositories_query(*, fork_tracking: bool) -> str:
    """Return the organization repositories query."""
    tail = _CONNECTION_TAIL % {"fields": repository_fields(fork_tracking=fork_tracking)}
    return f"""
query OrgRepos(
  $first: Int!
  $after: String
  $sortField: RepositoryOrderField!
  $sortDirection: OrderDirection!
  $orgLogin: String!
  $privacy: RepositoryPrivacy
) {{
  {_RATE_LIMIT}
  organization(login: $orgLogin) {{
    repositories(
      first: $first
      after: $after
      orderBy: {{field: $sortField, direction: $sortDirection}}
      privacy: $privacy
    ) {{ {tail} }}
  }}
}}
"""


def search_repositories_query(*, fork_tracking: bool) -> str:
    """Return the repository search query."""
    fields = repository_fields(fork_tracking=fork_tracking)
    return f"""
query SearchRepos($q: String!, $first: Int!, $after: String) {{
  {_RATE_LIMIT}
  search(query: $q, type: REPOSITORY, first: $first, after: $after) {{
    repositoryCount
    pageInfo {{ endCursor hasNextPage }}
    nodes {{ ... on Repository {{ {fields} }} }}
  }}
}}
"""


def starred_repositories_query(*, fork_tracking: bool) -> str:
    """Return the starred repositories query, newest star first."""
    tail = _CONNECTION_TAIL % {"fields": repository_fields(fork_tracking=fork_tracking)}
    return f"""
query StarredRepos($first: Int!, $after: String) {{
  {_RATE_LIMIT}
  viewer {{
    starredRepositories(
      first: $first
      after: $after
      orderBy: {{field: STARRED_AT, direction: DESC}}
    ) {{ {tail} }}
  }}
}}
"""


VIEWER_LOGIN_QUERY = "query { viewer { login } }"

ARCHIVE_MUTATION = """
mutation ArchiveRepo($repositoryId: ID!) {
  archiveRepository(input: {repositoryId: $repositoryId}) { clientMutationId }
}
"""

UNARCHIVE_MUTATION = """
mutation UnarchiveRepo($repositoryId: ID!) {
  unarchiveRepository(input: {repositoryId: $repositoryId}) { clientMutationId }
}
"""

RENAME_MUTATION = """
mutation RenameRepo($repositoryId: ID!, $name: String!) {
  updateRepository(input: {repositoryId: $repositoryId, name: $name}) {
    repository { id name nameWithOwner }
  }
}
"""

STAR_MUTATION = """
mutation StarRepo($starrableId: ID!) {
  addStar(input: {starrableId: $starrableId}) { clientMutationId }
}
"""

UNSTAR_MUTATION = """
mutation UnstarRepo($starrableId: ID!) {
  removeStar(input: {starrableId: $starrableId}) { clientMutationId }
}
"""
