"""Authentication: from a stored user to a security principal and back.

A principal is nothing but the user's id. Three pieces build on that:
1. principal: principal collections, subjects, act_as()
2. context: the explicit, request-scoped "who is calling" object
3. password, jwt: the credential and token collaborators

Password checking never happens in the user model itself; it only
surfaces the stored secret for the credential collaborator to check.
"""
